"""
mazemind - cognitive layer for agents surviving in a maze simulation

Memory stream, retrieval, reflection, hierarchical planning and relationship
memory, driven tick by tick through CognitiveEngine.
"""

__version__ = "0.1.0"
