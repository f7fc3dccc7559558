#!/usr/bin/env python3
"""Entrypoint for fitting one removal code."""

from enzyme_rate_model.cli.fit_rate_equation import main


if __name__ == "__main__":
    main()
