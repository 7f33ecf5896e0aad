"""
AllSales - Steam catalog ingestion service
"""
from allsales.constants import BUILD_VERSION

__version__ = BUILD_VERSION
