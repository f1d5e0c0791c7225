from templater.cli import main

main()
