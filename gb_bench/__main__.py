from gb_bench.cli import main

main()
