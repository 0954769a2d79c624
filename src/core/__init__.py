"""Core domain package for the conversation gateway.

Core contains key rotation, context budgeting, knowledge retrieval, event
normalization and reply segmentation without any transport or storage
specific code, keeping the gateway logic portable.
"""
