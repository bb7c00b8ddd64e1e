"""
Command-line interface: the Typer application, Rich formatters and the
progress display.
"""
