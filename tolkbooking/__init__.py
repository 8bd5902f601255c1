"""Interpreter booking core"""
