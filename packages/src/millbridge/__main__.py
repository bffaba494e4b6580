"""``python -m millbridge`` entrypoint."""

from millbridge import BridgeApp, __version__


def main() -> None:
    BridgeApp(version=__version__).cli()


if __name__ == "__main__":
    main()
