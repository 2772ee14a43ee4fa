from near_lake_supervisor.cli import main

main()
