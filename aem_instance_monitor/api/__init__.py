#!/usr/bin/env python3
"""
AEM Instance Monitor - REST API Module
"""
