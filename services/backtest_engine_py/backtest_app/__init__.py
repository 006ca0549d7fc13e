"""HTTP and command line surfaces over :mod:`backtest_core`."""
