from echo_server.main import main

main()
