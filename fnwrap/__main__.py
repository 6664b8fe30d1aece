# -*- coding: utf-8 -*-
from .cli import main

main()
