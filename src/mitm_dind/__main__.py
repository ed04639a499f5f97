from mitm_dind.cli import main

main()
