"""Sun Capture.

Captures webcam images in a window around the daily sunrise or sunset
and builds an animated GIF from each capture session.
"""

__version__ = "1.0.0"
__author__ = "Sun Capture Project"
