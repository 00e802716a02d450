from cluster_bootstrap.cli import main

main()
