"""Test suite for the raster recoder."""
