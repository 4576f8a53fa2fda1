"""
Source adapters and the annotator for Signal Terminal.
"""
