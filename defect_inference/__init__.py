"""
Defect Inference Server
=======================
Server-side inference for binary surface-defect classification.

Loads a Keras model whose graph embeds a custom Normalization layer,
preprocesses uploaded images and returns a Defective / Good decision
with the model's raw confidence scores.

Author: Defect Inference Team
Version: 1.0.0
"""

__version__ = "1.0.0"
__author__ = "Defect Inference Team"
