from allsales.app import main

main()
