"""
Haven - Crisis Detection & Intervention Engine
==============================================

Scores relationship risk for couples and triggers graduated interventions.
"""

__version__ = "0.1.0"
