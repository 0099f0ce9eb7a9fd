"""Module entrypoint for `python -m shipyard`."""

from shipyard.main import main

if __name__ == "__main__":
    main()
