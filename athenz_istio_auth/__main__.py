from athenz_istio_auth.operator import main

main()
