"""clipfetch: social video download service"""
