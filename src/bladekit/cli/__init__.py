"""bladekit command line interface"""
