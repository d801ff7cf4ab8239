"""
Gate Discovery - infers event entry gates from check-in data
"""
__version__ = "1.0.0"
