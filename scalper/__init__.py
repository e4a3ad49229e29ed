"""FlashScalper position lifecycle and exit-decision engine"""
