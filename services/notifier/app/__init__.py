"""Notifier Service — 注文通知の配信"""
