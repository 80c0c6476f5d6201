"""Run the helm-operator command line tool."""

from .tool.helm_operator import main

main()
