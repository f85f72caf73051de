"""Conso exporter package.

A Docker-friendly exporter that pulls Linky (Enedis) electricity and Gazpar
(GRDF) gas consumption and writes it to InfluxDB with historical timestamps.
"""

__version__ = "0.1.0"
