"""duedigest: scheduled SMS digests of upcoming due assignments."""

__version__ = "1.0.0"
