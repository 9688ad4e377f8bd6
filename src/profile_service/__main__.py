from profile_service.api import main

main()
