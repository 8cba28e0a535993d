from __future__ import annotations

# MediaPipe Face Mesh topology. Remap these if the landmark provider changes.
MIN_LANDMARK_COUNT = 468

UPPER_INNER_LIP = 13
LOWER_INNER_LIP = 14
MOUTH_CORNERS = (61, 291)

INNER_LIP = [
    78,
    191,
    80,
    81,
    82,
    13,
    312,
    311,
    310,
    415,
    308,
    324,
    318,
    402,
    317,
    14,
    87,
    178,
    88,
    95,
]
