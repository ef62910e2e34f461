import sys

from sandforge.cli import run_cli


def main() -> None:
    sys.exit(run_cli())


if __name__ == "__main__":
    main()
