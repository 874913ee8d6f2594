"""Module entrypoint for `python -m containercli`."""

from containercli.cli import run

if __name__ == "__main__":
    raise SystemExit(run())
