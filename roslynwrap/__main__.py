from roslynwrap.cli.app import main

main()
