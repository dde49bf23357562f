"""
Global catalog of framework requirements, seeded at startup.

Entries are ``(control_id, category, title)``; the catalog is shared by
every organization and keyed by framework code.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from idara.models.security import StandardControl

logger = logging.getLogger(__name__)

FRAMEWORK_CATALOG = {
    "soc-2": {"name": "SOC 2", "version": "2017 Trust Services Criteria"},
    "iso-27001": {"name": "ISO/IEC 27001", "version": "2022"},
}

SOC2_CONTROLS = [
    ("CC1.1", "Security - Control Environment", "Demonstrates commitment to integrity and ethical values"),
    ("CC1.2", "Security - Control Environment", "Exercises oversight responsibility"),
    ("CC1.3", "Security - Control Environment", "Establishes structure, authority, and responsibility"),
    ("CC1.4", "Security - Control Environment", "Demonstrates commitment to competence"),
    ("CC1.5", "Security - Control Environment", "Enforces accountability"),
    ("CC2.1", "Security - Communication and Information", "Obtains or generates relevant, quality information"),
    ("CC2.2", "Security - Communication and Information", "Communicates internally"),
    ("CC2.3", "Security - Communication and Information", "Communicates externally"),
    ("CC3.1", "Security - Risk Assessment", "Specifies suitable objectives"),
    ("CC3.2", "Security - Risk Assessment", "Identifies and analyzes risk"),
    ("CC3.3", "Security - Risk Assessment", "Considers potential for fraud"),
    ("CC3.4", "Security - Risk Assessment", "Identifies and analyzes significant change"),
    ("CC4.1", "Security - Monitoring Activities", "Selects and develops ongoing and/or separate evaluations"),
    ("CC4.2", "Security - Monitoring Activities", "Evaluates and communicates deficiencies"),
    ("CC5.1", "Security - Control Activities", "Selects and develops control activities"),
    ("CC5.2", "Security - Control Activities", "Selects and develops general controls over technology"),
    ("CC5.3", "Security - Control Activities", "Deploys through policies and procedures"),
    ("CC6.1", "Security - Logical and Physical Access", "Security software, infrastructure, and architectures"),
    ("CC6.2", "Security - Logical and Physical Access", "Authentication and access"),
    ("CC6.3", "Security - Logical and Physical Access", "Access removal"),
    ("CC6.4", "Security - Logical and Physical Access", "Physical access restrictions"),
    ("CC6.5", "Security - Logical and Physical Access", "Physical access to assets"),
    ("CC6.6", "Security - Logical and Physical Access", "Security events against threats"),
    ("CC6.7", "Security - Logical and Physical Access", "Information transmission"),
    ("CC6.8", "Security - Logical and Physical Access", "Malicious software prevention"),
    ("CC7.1", "Security - System Operations", "Vulnerability detection"),
    ("CC7.2", "Security - System Operations", "Security incident monitoring"),
    ("CC7.3", "Security - System Operations", "Security incident evaluation"),
    ("CC7.4", "Security - System Operations", "Security incident response"),
    ("CC7.5", "Security - System Operations", "Recovery from incidents"),
    ("CC8.1", "Security - Change Management", "Infrastructure and software changes"),
    ("CC9.1", "Security - Risk Mitigation", "Business disruption risk mitigation"),
    ("CC9.2", "Security - Risk Mitigation", "Vendor and business partner risk management"),
    ("A1.1", "Availability", "System availability management"),
    ("A1.2", "Availability", "Environmental and data recovery"),
    ("A1.3", "Availability", "Business continuity testing"),
    ("PI1.1", "Processing Integrity", "Processing accuracy and completeness"),
    ("PI1.2", "Processing Integrity", "Input validation"),
    ("PI1.3", "Processing Integrity", "Processing error handling"),
    ("PI1.4", "Processing Integrity", "Output completeness and accuracy"),
    ("PI1.5", "Processing Integrity", "Data storage and retention"),
    ("C1.1", "Confidentiality", "Confidential information identification"),
    ("C1.2", "Confidentiality", "Confidential information disposal"),
    ("P1.1", "Privacy", "Privacy notice"),
    ("P2.1", "Privacy", "Privacy choice and consent"),
    ("P3.1", "Privacy", "Personal information collection"),
    ("P3.2", "Privacy", "Explicit consent for sensitive information"),
    ("P4.1", "Privacy", "Personal information use limitation"),
    ("P4.2", "Privacy", "Personal information retention"),
    ("P4.3", "Privacy", "Personal information disposal"),
    ("P5.1", "Privacy", "Personal information access"),
    ("P5.2", "Privacy", "Personal information correction"),
    ("P6.1", "Privacy", "Personal information disclosure"),
    ("P6.2", "Privacy", "Record of authorized disclosures"),
    ("P6.3", "Privacy", "Record of unauthorized disclosures"),
    ("P6.4", "Privacy", "Third party privacy commitments"),
    ("P6.5", "Privacy", "Notification of unauthorized disclosures by third parties"),
    ("P6.6", "Privacy", "Breach notification"),
    ("P6.7", "Privacy", "Accounting of personal information held"),
    ("P7.1", "Privacy", "Personal information accuracy"),
    ("P8.1", "Privacy", "Privacy inquiries, complaints and disputes"),
]

_ISO_ORG = "Organizational"
_ISO_PEOPLE = "People"
_ISO_PHYSICAL = "Physical"
_ISO_TECH = "Technological"

ISO27001_CONTROLS = [
    ("A.5.1", _ISO_ORG, "Policies for information security"),
    ("A.5.2", _ISO_ORG, "Information security roles and responsibilities"),
    ("A.5.3", _ISO_ORG, "Segregation of duties"),
    ("A.5.4", _ISO_ORG, "Management responsibilities"),
    ("A.5.5", _ISO_ORG, "Contact with authorities"),
    ("A.5.6", _ISO_ORG, "Contact with special interest groups"),
    ("A.5.7", _ISO_ORG, "Threat intelligence"),
    ("A.5.8", _ISO_ORG, "Information security in project management"),
    ("A.5.9", _ISO_ORG, "Inventory of information and other associated assets"),
    ("A.5.10", _ISO_ORG, "Acceptable use of information and other associated assets"),
    ("A.5.11", _ISO_ORG, "Return of assets"),
    ("A.5.12", _ISO_ORG, "Classification of information"),
    ("A.5.13", _ISO_ORG, "Labelling of information"),
    ("A.5.14", _ISO_ORG, "Information transfer"),
    ("A.5.15", _ISO_ORG, "Access control"),
    ("A.5.16", _ISO_ORG, "Identity management"),
    ("A.5.17", _ISO_ORG, "Authentication information"),
    ("A.5.18", _ISO_ORG, "Access rights"),
    ("A.5.19", _ISO_ORG, "Information security in supplier relationships"),
    ("A.5.20", _ISO_ORG, "Addressing information security within supplier agreements"),
    ("A.5.21", _ISO_ORG, "Managing information security in the ICT supply chain"),
    ("A.5.22", _ISO_ORG, "Monitoring, review and change management of supplier services"),
    ("A.5.23", _ISO_ORG, "Information security for use of cloud services"),
    ("A.5.24", _ISO_ORG, "Information security incident management planning and preparation"),
    ("A.5.25", _ISO_ORG, "Assessment and decision on information security events"),
    ("A.5.26", _ISO_ORG, "Response to information security incidents"),
    ("A.5.27", _ISO_ORG, "Learning from information security incidents"),
    ("A.5.28", _ISO_ORG, "Collection of evidence"),
    ("A.5.29", _ISO_ORG, "Information security during disruption"),
    ("A.5.30", _ISO_ORG, "ICT readiness for business continuity"),
    ("A.5.31", _ISO_ORG, "Legal, statutory, regulatory and contractual requirements"),
    ("A.5.32", _ISO_ORG, "Intellectual property rights"),
    ("A.5.33", _ISO_ORG, "Protection of records"),
    ("A.5.34", _ISO_ORG, "Privacy and protection of PII"),
    ("A.5.35", _ISO_ORG, "Independent review of information security"),
    ("A.5.36", _ISO_ORG, "Compliance with policies, rules and standards for information security"),
    ("A.5.37", _ISO_ORG, "Documented operating procedures"),
    ("A.6.1", _ISO_PEOPLE, "Screening"),
    ("A.6.2", _ISO_PEOPLE, "Terms and conditions of employment"),
    ("A.6.3", _ISO_PEOPLE, "Information security awareness, education and training"),
    ("A.6.4", _ISO_PEOPLE, "Disciplinary process"),
    ("A.6.5", _ISO_PEOPLE, "Responsibilities after termination or change of employment"),
    ("A.6.6", _ISO_PEOPLE, "Confidentiality or non-disclosure agreements"),
    ("A.6.7", _ISO_PEOPLE, "Remote working"),
    ("A.6.8", _ISO_PEOPLE, "Information security event reporting"),
    ("A.7.1", _ISO_PHYSICAL, "Physical security perimeters"),
    ("A.7.2", _ISO_PHYSICAL, "Physical entry"),
    ("A.7.3", _ISO_PHYSICAL, "Securing offices, rooms and facilities"),
    ("A.7.4", _ISO_PHYSICAL, "Physical security monitoring"),
    ("A.7.5", _ISO_PHYSICAL, "Protecting against physical and environmental threats"),
    ("A.7.6", _ISO_PHYSICAL, "Working in secure areas"),
    ("A.7.7", _ISO_PHYSICAL, "Clear desk and clear screen"),
    ("A.7.8", _ISO_PHYSICAL, "Equipment siting and protection"),
    ("A.7.9", _ISO_PHYSICAL, "Security of assets off-premises"),
    ("A.7.10", _ISO_PHYSICAL, "Storage media"),
    ("A.7.11", _ISO_PHYSICAL, "Supporting utilities"),
    ("A.7.12", _ISO_PHYSICAL, "Cabling security"),
    ("A.7.13", _ISO_PHYSICAL, "Equipment maintenance"),
    ("A.7.14", _ISO_PHYSICAL, "Secure disposal or re-use of equipment"),
    ("A.8.1", _ISO_TECH, "User endpoint devices"),
    ("A.8.2", _ISO_TECH, "Privileged access rights"),
    ("A.8.3", _ISO_TECH, "Information access restriction"),
    ("A.8.4", _ISO_TECH, "Access to source code"),
    ("A.8.5", _ISO_TECH, "Secure authentication"),
    ("A.8.6", _ISO_TECH, "Capacity management"),
    ("A.8.7", _ISO_TECH, "Protection against malware"),
    ("A.8.8", _ISO_TECH, "Management of technical vulnerabilities"),
    ("A.8.9", _ISO_TECH, "Configuration management"),
    ("A.8.10", _ISO_TECH, "Information deletion"),
    ("A.8.11", _ISO_TECH, "Data masking"),
    ("A.8.12", _ISO_TECH, "Data leakage prevention"),
    ("A.8.13", _ISO_TECH, "Information backup"),
    ("A.8.14", _ISO_TECH, "Redundancy of information processing facilities"),
    ("A.8.15", _ISO_TECH, "Logging"),
    ("A.8.16", _ISO_TECH, "Monitoring activities"),
    ("A.8.17", _ISO_TECH, "Clock synchronization"),
    ("A.8.18", _ISO_TECH, "Use of privileged utility programs"),
    ("A.8.19", _ISO_TECH, "Installation of software on operational systems"),
    ("A.8.20", _ISO_TECH, "Networks security"),
    ("A.8.21", _ISO_TECH, "Security of network services"),
    ("A.8.22", _ISO_TECH, "Segregation of networks"),
    ("A.8.23", _ISO_TECH, "Web filtering"),
    ("A.8.24", _ISO_TECH, "Use of cryptography"),
    ("A.8.25", _ISO_TECH, "Secure development life cycle"),
    ("A.8.26", _ISO_TECH, "Application security requirements"),
    ("A.8.27", _ISO_TECH, "Secure system architecture and engineering principles"),
    ("A.8.28", _ISO_TECH, "Secure coding"),
    ("A.8.29", _ISO_TECH, "Security testing in development and acceptance"),
    ("A.8.30", _ISO_TECH, "Outsourced development"),
    ("A.8.31", _ISO_TECH, "Separation of development, test and production environments"),
    ("A.8.32", _ISO_TECH, "Change management"),
    ("A.8.33", _ISO_TECH, "Test information"),
    ("A.8.34", _ISO_TECH, "Protection of information systems during audit testing"),
]

STANDARD_CONTROLS = {
    "soc-2": SOC2_CONTROLS,
    "iso-27001": ISO27001_CONTROLS,
}


async def seed_standard_controls(db: AsyncSession) -> int:
    """Insert catalog entries that are not in the database yet. Returns the number added."""
    result = await db.execute(select(StandardControl.framework_code, StandardControl.control_id))
    existing = set(result.all())

    added = 0
    for framework_code, controls in STANDARD_CONTROLS.items():
        for sort_order, (control_id, category, title) in enumerate(controls):
            if (framework_code, control_id) in existing:
                continue
            db.add(StandardControl(
                framework_code=framework_code,
                control_id=control_id,
                category=category,
                title=title,
                sort_order=sort_order,
            ))
            added += 1

    if added:
        await db.commit()
        logger.info("Seeded %d standard controls", added)
    return added
