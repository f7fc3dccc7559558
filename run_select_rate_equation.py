#!/usr/bin/env python3
"""Entrypoint for stepwise rate equation selection."""

from enzyme_rate_model.cli.select_rate_equation import main


if __name__ == "__main__":
    main()
