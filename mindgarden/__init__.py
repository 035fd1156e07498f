"""
MindGarden — conversation, mood assessment and mood garden core
for a mental-wellness client.
"""

__version__ = "0.4.0"
