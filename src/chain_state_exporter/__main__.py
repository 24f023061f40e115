import sys


def main():
    from chain_state_exporter.cli import main as cli_main, build_parser

    # Show help if no arguments are provided
    if len(sys.argv) == 1:
        parser = build_parser()
        parser.print_help()
        return 0

    return cli_main()


if __name__ == "__main__":
    sys.exit(main())
