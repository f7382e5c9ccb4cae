from td.cli import main

main()
