"""Module entrypoint for `python -m sloprobe`."""

from sloprobe.cli import run

if __name__ == "__main__":
    raise SystemExit(run())
