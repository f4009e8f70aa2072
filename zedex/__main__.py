from zedex.cli import main

main()
