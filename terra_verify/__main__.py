from terra_verify.cli.main import main

main()
