"""Find repeated location entries on a web page from a few examples, geocode them and put them on a map."""

__version__ = "0.1.0"
