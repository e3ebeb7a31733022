from convex_hooks.cli.app import main

main()
