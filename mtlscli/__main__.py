"""Entry point for running mtlscli with ``python -m mtlscli``."""

from mtlscli.main import cli

if __name__ == "__main__":
    cli()
