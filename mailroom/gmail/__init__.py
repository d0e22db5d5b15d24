"""Gmail integration - OAuth and outbound notifications"""
