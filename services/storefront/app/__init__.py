"""Storefront Service — カート照合と注文確定"""
