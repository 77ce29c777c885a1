"""LeaseBid command line interface."""
