"""tagindex: keep tag-hierarchy index blocks in Markdown vaults up to date."""

__version__ = "0.1.0"
