from sheetrelay.cli import main

main()
