from dr_reconciler.cli.main import main

if __name__ == "__main__":
    main()
