from calcblocks.cli import main

main()
